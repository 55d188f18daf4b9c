import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier for this record",
            primary_key=True,
            serialize=False,
        ),
    )


def _bigauto_pk():
    return (
        "id",
        models.BigAutoField(
            auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
        ),
    )


def _soft_delete():
    return [
        (
            "is_deleted",
            models.BooleanField(
                db_index=True,
                default=False,
                help_text="Whether this record has been soft deleted",
            ),
        ),
        (
            "deleted_at",
            models.DateTimeField(
                blank=True,
                null=True,
                help_text="Timestamp when this record was soft deleted",
            ),
        ),
    ]


def _user_fk(related_name, help_text, **kwargs):
    return models.ForeignKey(
        help_text=help_text,
        on_delete=kwargs.pop("on_delete", django.db.models.deletion.CASCADE),
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
        **kwargs,
    )


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Thread",
            fields=[
                *_timestamps(),
                *_soft_delete(),
                _uuid_pk(),
                (
                    "thread_type",
                    models.CharField(
                        choices=[("direct", "Direct"), ("group", "Group")],
                        db_index=True,
                        help_text="Type of thread: direct (1:1) or group",
                        max_length=10,
                    ),
                ),
                (
                    "title",
                    models.CharField(
                        blank=True,
                        help_text="Group title (null for direct threads)",
                        max_length=200,
                        null=True,
                    ),
                ),
                (
                    "last_message_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Timestamp of the newest message in this thread",
                        null=True,
                    ),
                ),
                (
                    "created_by",
                    _user_fk(
                        "created_threads",
                        "User who created this thread",
                        on_delete=django.db.models.deletion.SET_NULL,
                        blank=True,
                        null=True,
                    ),
                ),
            ],
            options={
                "db_table": "chat_thread",
                "ordering": ["-updated_at"],
                "indexes": [
                    models.Index(
                        fields=["thread_type", "is_deleted"],
                        name="chat_thread_type_deleted_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("updated_at", _timestamps()[1][1]),
                *_soft_delete(),
                _uuid_pk(),
                (
                    "message_type",
                    models.CharField(
                        choices=[
                            ("text", "Text"),
                            ("image", "Image"),
                            ("file", "File"),
                            ("system", "System"),
                        ],
                        default="text",
                        help_text="Type of message (text/image/file/system)",
                        max_length=10,
                    ),
                ),
                (
                    "content",
                    models.TextField(
                        blank=True,
                        help_text="Message text (null for attachment-only or deleted messages)",
                        null=True,
                    ),
                ),
                (
                    "is_edited",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the content was edited after sending",
                    ),
                ),
                (
                    "edited_at",
                    models.DateTimeField(
                        blank=True, help_text="When the message was last edited", null=True
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        editable=False,
                        help_text="Server-assigned send time; defines order within the thread",
                    ),
                ),
                (
                    "reply_to",
                    models.ForeignKey(
                        blank=True,
                        help_text="Earlier message in the same thread this one replies to",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="replies",
                        to="chat.message",
                    ),
                ),
                (
                    "sender",
                    _user_fk(
                        "sent_messages",
                        "User who sent the message (null for system messages)",
                        on_delete=django.db.models.deletion.SET_NULL,
                        blank=True,
                        null=True,
                    ),
                ),
                (
                    "thread",
                    models.ForeignKey(
                        help_text="Thread this message belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="messages",
                        to="chat.thread",
                    ),
                ),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(
                        fields=["thread", "created_at"],
                        name="chat_msg_thread_created_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Attachment",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("file_name", models.CharField(help_text="Original file name", max_length=255)),
                (
                    "file_type",
                    models.CharField(
                        blank=True, help_text="MIME type declared by the sender", max_length=255
                    ),
                ),
                (
                    "file_size",
                    models.PositiveBigIntegerField(
                        blank=True, help_text="Declared size in bytes", null=True
                    ),
                ),
                (
                    "storage_path",
                    models.CharField(
                        help_text="Object storage locator", max_length=1024, unique=True
                    ),
                ),
                (
                    "upload_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("uploaded", "Uploaded"),
                            ("orphaned", "Orphaned"),
                        ],
                        default="pending",
                        help_text="Whether the bytes were found in storage",
                        max_length=10,
                    ),
                ),
                (
                    "uploaded_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the bytes were confirmed in storage",
                        null=True,
                    ),
                ),
                (
                    "message",
                    models.ForeignKey(
                        help_text="Message this attachment belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="attachments",
                        to="chat.message",
                    ),
                ),
            ],
            options={
                "db_table": "chat_attachment",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(
                        fields=["upload_status", "created_at"],
                        name="chat_attach_status_idx",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ThreadMember",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                (
                    "role",
                    models.CharField(
                        choices=[("owner", "Owner"), ("admin", "Admin"), ("member", "Member")],
                        default="member",
                        help_text="Role in the thread (owner/admin/member)",
                        max_length=10,
                    ),
                ),
                (
                    "joined_at",
                    models.DateTimeField(
                        default=django.utils.timezone.now,
                        help_text="When the user joined the thread",
                    ),
                ),
                (
                    "left_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the user left (null = active member)",
                        null=True,
                    ),
                ),
                (
                    "muted",
                    models.BooleanField(
                        default=False,
                        help_text="Whether notifications for this thread are muted",
                    ),
                ),
                (
                    "muted_until",
                    models.DateTimeField(
                        blank=True,
                        help_text="Mute expiry (null = muted until unmuted)",
                        null=True,
                    ),
                ),
                (
                    "last_read_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the read pointer last advanced",
                        null=True,
                    ),
                ),
                (
                    "last_read_message",
                    models.ForeignKey(
                        blank=True,
                        help_text="Newest message this member has read",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="chat.message",
                    ),
                ),
                (
                    "thread",
                    models.ForeignKey(
                        help_text="Thread this membership belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="members",
                        to="chat.thread",
                    ),
                ),
                ("user", _user_fk("thread_memberships", "Member user")),
            ],
            options={
                "db_table": "chat_thread_member",
                "ordering": ["joined_at"],
                "indexes": [
                    models.Index(
                        fields=["user", "left_at"],
                        name="chat_member_user_active_idx",
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("thread", "user"), name="unique_thread_member"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DirectThreadPair",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                (
                    "thread",
                    models.OneToOneField(
                        help_text="The direct thread for this pair",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="direct_pair",
                        to="chat.thread",
                    ),
                ),
                ("user_lower", _user_fk("+", "User with the lower id")),
                ("user_higher", _user_fk("+", "User with the higher id")),
            ],
            options={
                "db_table": "chat_direct_thread_pair",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user_lower", "user_higher"),
                        name="unique_direct_thread_pair",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("user_lower_id__lt", models.F("user_higher_id"))
                        ),
                        name="direct_pair_lower_less_than_higher",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PinnedThread",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                (
                    "thread",
                    models.ForeignKey(
                        help_text="Pinned thread",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pins",
                        to="chat.thread",
                    ),
                ),
                ("user", _user_fk("pinned_threads", "User who pinned the thread")),
            ],
            options={
                "db_table": "chat_pinned_thread",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "thread"), name="unique_pinned_thread"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="MessageHide",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                (
                    "message",
                    models.ForeignKey(
                        help_text="Hidden message",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="hides",
                        to="chat.message",
                    ),
                ),
                ("user", _user_fk("hidden_messages", "User who hid the message")),
            ],
            options={
                "db_table": "chat_message_hide",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "message"), name="unique_message_hide"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PinnedMessage",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                (
                    "message",
                    models.ForeignKey(
                        help_text="Pinned message",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pins",
                        to="chat.message",
                    ),
                ),
                (
                    "thread",
                    models.ForeignKey(
                        help_text="Thread of the pinned message",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="pinned_messages",
                        to="chat.thread",
                    ),
                ),
                ("user", _user_fk("pinned_messages", "User who pinned the message")),
            ],
            options={
                "db_table": "chat_pinned_message",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "message"), name="unique_pinned_message"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Presence",
            fields=[
                (
                    "user",
                    models.OneToOneField(
                        help_text="User this presence belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="chat_presence",
                        serialize=False,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("online", "Online"),
                            ("away", "Away"),
                            ("busy", "Busy"),
                            ("offline", "Offline"),
                        ],
                        default="online",
                        help_text="Current status",
                        max_length=10,
                    ),
                ),
                (
                    "status_message",
                    models.CharField(
                        blank=True, help_text="Free-text status message", max_length=140
                    ),
                ),
                (
                    "last_seen_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        help_text="Last time the user reported presence",
                    ),
                ),
            ],
            options={
                "db_table": "chat_presence",
            },
        ),
        migrations.CreateModel(
            name="ChatBlock",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                ("blocker", _user_fk("chat_blocks_made", "User who created the block")),
                ("blocked", _user_fk("chat_blocks_received", "User who is blocked")),
            ],
            options={
                "db_table": "chat_block",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("blocker", "blocked"), name="unique_chat_block"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("blocker", models.F("blocked")), _negated=True
                        ),
                        name="chat_block_not_self",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ChatSettings",
            fields=[
                *_timestamps(),
                (
                    "user",
                    models.OneToOneField(
                        help_text="User these settings belong to",
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="chat_settings",
                        serialize=False,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "accept_new_chats",
                    models.BooleanField(
                        default=True,
                        help_text="Whether other users may open new direct threads",
                    ),
                ),
                (
                    "who_can_contact",
                    models.CharField(
                        choices=[
                            ("anyone", "Anyone"),
                            ("providers", "Providers only"),
                            ("nobody", "Nobody"),
                        ],
                        default="anyone",
                        help_text="Which users may open new direct threads",
                        max_length=10,
                    ),
                ),
                ("notifications_enabled", models.BooleanField(default=True)),
                ("sound_enabled", models.BooleanField(default=True)),
                (
                    "show_typing_indicators",
                    models.BooleanField(
                        default=True, help_text="Broadcast this user's typing state"
                    ),
                ),
                (
                    "show_read_receipts",
                    models.BooleanField(
                        default=True, help_text="Broadcast this user's read pointer"
                    ),
                ),
                (
                    "show_online_status",
                    models.BooleanField(
                        default=True, help_text="Expose this user's presence to others"
                    ),
                ),
                ("enter_to_send", models.BooleanField(default=True)),
            ],
            options={
                "db_table": "chat_settings",
                "verbose_name_plural": "chat settings",
            },
        ),
        migrations.CreateModel(
            name="QuickReply",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("title", models.CharField(help_text="Short label", max_length=100)),
                ("content", models.TextField(help_text="Text inserted into the composer")),
                ("category", models.CharField(blank=True, max_length=50)),
                (
                    "shortcut",
                    models.CharField(
                        blank=True,
                        help_text="Composer shortcut such as /thanks",
                        max_length=32,
                    ),
                ),
                ("user", _user_fk("quick_replies", "Owner of the quick reply")),
            ],
            options={
                "db_table": "chat_quick_reply",
                "ordering": ["title"],
            },
        ),
        migrations.CreateModel(
            name="UserReport",
            fields=[
                _bigauto_pk(),
                *_timestamps(),
                ("reason", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("reviewed", "Reviewed"),
                            ("dismissed", "Dismissed"),
                        ],
                        default="open",
                        max_length=10,
                    ),
                ),
                (
                    "message",
                    models.ForeignKey(
                        blank=True,
                        help_text="Offending message, if any",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="reports",
                        to="chat.message",
                    ),
                ),
                ("reporter", _user_fk("chat_reports_made", "User filing the report")),
                ("reported", _user_fk("chat_reports_received", "User being reported")),
            ],
            options={
                "db_table": "chat_user_report",
                "ordering": ["-created_at"],
            },
        ),
    ]
