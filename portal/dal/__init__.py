from .user_dal import UserDAL

__all__ = ["UserDAL"]
