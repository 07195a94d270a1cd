from marketsim.market.matching import Assignment, Market
from marketsim.market.budget import BudgetController, Verdict
from marketsim.market.behaviour import report_usage
from marketsim.market.defence import CTasks, DefenceMechanism, LGRola, Redundancy, make_defence

__all__ = [
    "Assignment", "Market", "BudgetController", "Verdict", "report_usage",
    "DefenceMechanism", "CTasks", "LGRola", "Redundancy", "make_defence",
]
