from .resolver import IdentityResolver, consolidate, plan_resolution

__all__ = ["IdentityResolver", "consolidate", "plan_resolution"]
