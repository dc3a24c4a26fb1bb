from .permit import PermitAuthorizer, check_covers, permit_typed_data

__all__ = ["PermitAuthorizer", "check_covers", "permit_typed_data"]
