class GateMappingError(ValueError):
    """Two canonical gate ids claim the same provider alias."""

    def __init__(self, message: str, alias: str | None = None, claimants: tuple[str, ...] = ()):
        super().__init__(message)
        self.alias = alias
        self.claimants = claimants
