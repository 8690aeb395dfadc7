from tradeledger.strategy.models import Strategy, StrategyConfig
from tradeledger.strategy.config_file import StrategyConfigFile
from tradeledger.strategy.registry import StrategyRegistry
from tradeledger.strategy.comparison import ComparisonAggregator, ComparisonReport, StrategySummary

__all__ = [
    "Strategy",
    "StrategyConfig",
    "StrategyConfigFile",
    "StrategyRegistry",
    "ComparisonAggregator",
    "ComparisonReport",
    "StrategySummary",
]
