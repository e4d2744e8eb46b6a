class RebalancePreconditionError(Exception):
    code = "REBALANCE_PRECONDITION_FAILED"

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class NoHoldingsError(RebalancePreconditionError):
    code = "NO_HOLDINGS"


class NegativeDeltaError(RebalancePreconditionError):
    code = "NEGATIVE_DELTA"


class SavingPlanDeltaBelowMinimumError(RebalancePreconditionError):
    code = "SAVING_PLAN_DELTA_BELOW_MINIMUM"


class OneTimeAmountBelowMinimumError(RebalancePreconditionError):
    code = "ONE_TIME_AMOUNT_BELOW_MINIMUM"
