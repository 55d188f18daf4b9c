"""
Core Application - Infrastructure & Base Classes

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - ErrorCode: Machine-readable error codes
    - BaseApplicationError and the messaging error taxonomy
    - status_for_code / exception_for_code helpers

Views (import from core.views):
    - health_check: Database/cache probe for load balancers
"""
