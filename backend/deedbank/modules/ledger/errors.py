class LedgerError(ValueError):
    pass


class InvalidPointsError(LedgerError):
    pass


class InsufficientBalanceError(LedgerError):
    def __init__(self, available: int, requested: int):
        super().__init__("Insufficient points to redeem")
        self.Available = available
        self.Requested = requested


class LedgerNotFoundError(LedgerError):
    pass


class ChildNotFoundError(LedgerNotFoundError):
    def __init__(self, child_id: int):
        super().__init__("Child not found")
        self.ChildId = child_id


class DeedTypeNotFoundError(LedgerNotFoundError):
    def __init__(self, deed_type_id: int):
        super().__init__("Deed type not found")
        self.DeedTypeId = deed_type_id


class DeedNotFoundError(LedgerNotFoundError):
    def __init__(self, deed_id: int):
        super().__init__("Deed not found")
        self.DeedId = deed_id


class RedemptionNotFoundError(LedgerNotFoundError):
    def __init__(self, redemption_id: int):
        super().__init__("Redemption not found")
        self.RedemptionId = redemption_id


class LedgerConflictError(LedgerError):
    pass
