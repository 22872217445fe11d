# Reference set membership collaborator
from .membership import ReferenceSetMembership

__all__ = ["ReferenceSetMembership"]
