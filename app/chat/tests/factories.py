"""
Factory Boy factories for messaging models.

Provides realistic test data generation for:
- Thread: Direct and group threads
- ThreadMember: Membership with role
- Message: Text and system messages
- Attachment: Pending attachment metadata

Usage:
    from chat.tests.factories import (
        DirectThreadFactory,
        GroupThreadFactory,
        MessageFactory,
    )

    # Direct thread between two users (pair row and both members)
    thread = DirectThreadFactory(user1=alice, user2=bob)

    # Group owned by alice with bob and carol as members
    thread = GroupThreadFactory(created_by=alice, members=[bob, carol])

    # Message in a thread
    message = MessageFactory(thread=thread, sender=alice)
"""

import factory
from django.utils import timezone

from accounts.tests.factories import UserFactory
from chat.models import (
    Attachment,
    DirectThreadPair,
    MemberRole,
    Message,
    MessageType,
    Thread,
    ThreadMember,
    ThreadType,
)


class ThreadMemberFactory(factory.django.DjangoModelFactory):
    """
    Factory for ThreadMember.

    Examples:
        ThreadMemberFactory(thread=thread, user=user, role=MemberRole.ADMIN)
        ThreadMemberFactory(thread=thread, left_at=timezone.now())  # former member
    """

    class Meta:
        model = ThreadMember

    thread = None
    user = factory.SubFactory(UserFactory)
    role = MemberRole.MEMBER
    left_at = None


class GroupThreadFactory(factory.django.DjangoModelFactory):
    """
    Factory for group threads.

    The creator is added as owner. Pass members=[...] to add plain members.

    Examples:
        thread = GroupThreadFactory()  # owner only
        thread = GroupThreadFactory(created_by=alice, members=[bob, carol])
    """

    class Meta:
        model = Thread
        skip_postgeneration_save = True

    thread_type = ThreadType.GROUP
    title = factory.Sequence(lambda n: f"Care Team {n}")
    created_by = factory.SubFactory(UserFactory)

    @factory.post_generation
    def members(self, create, extracted, **kwargs):
        """Add the creator as owner, then any extracted users as members."""
        if not create:
            return
        ThreadMemberFactory(thread=self, user=self.created_by, role=MemberRole.OWNER)
        for user in extracted or []:
            ThreadMemberFactory(thread=self, user=user, role=MemberRole.MEMBER)


class DirectThreadFactory(factory.django.DjangoModelFactory):
    """
    Factory for direct (1:1) threads.

    Creates the DirectThreadPair row in canonical order and both members.

    Examples:
        thread = DirectThreadFactory()
        thread = DirectThreadFactory(user1=alice, user2=bob)
    """

    class Meta:
        model = Thread

    thread_type = ThreadType.DIRECT
    title = None

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        user1 = kwargs.pop("user1", None) or UserFactory()
        user2 = kwargs.pop("user2", None) or UserFactory()
        kwargs.setdefault("created_by", user1)

        thread = model_class.objects.create(*args, **kwargs)
        user_lower_id, user_higher_id = DirectThreadPair.canonical(user1.pk, user2.pk)
        DirectThreadPair.objects.create(
            thread=thread,
            user_lower_id=user_lower_id,
            user_higher_id=user_higher_id,
        )
        for user in (user1, user2):
            ThreadMemberFactory(thread=thread, user=user, role=MemberRole.MEMBER)
        return thread


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Factory for messages.

    created_at defaults to now; pass explicit values to control ordering.
    The thread's last_message_at is not touched (use MessageService.send
    when the strictly increasing timestamp matters).

    Examples:
        MessageFactory(thread=thread, sender=user, content="Hi")
        MessageFactory(thread=thread, sender=user, is_deleted=True, content=None)
    """

    class Meta:
        model = Message

    thread = factory.SubFactory(GroupThreadFactory)
    sender = factory.SubFactory(UserFactory)
    message_type = MessageType.TEXT
    content = factory.Sequence(lambda n: f"Message {n}")
    created_at = factory.LazyFunction(timezone.now)


class AttachmentFactory(factory.django.DjangoModelFactory):
    """
    Factory for attachment metadata (pending upload by default).

    Examples:
        AttachmentFactory(message=message, file_type="image/png")
    """

    class Meta:
        model = Attachment

    message = factory.SubFactory(MessageFactory)
    file_name = factory.Sequence(lambda n: f"report_{n}.pdf")
    file_type = "application/pdf"
    file_size = 2048
    storage_path = factory.LazyAttribute(
        lambda o: f"{o.message.thread_id}/{o.message.id}/abc_{o.file_name}"
    )
