from .refresh_match import RefreshMatchUseCase
from .resolve_match import ResolveMatchUseCase

__all__ = ["RefreshMatchUseCase", "ResolveMatchUseCase"]
