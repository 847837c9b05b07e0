from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional
from enum import Enum

from models.market_data import OHLCVBar


class PatternCategory(str, Enum):
    CANDLESTICK = "candlestick"
    CHART = "chart"
    COMBINATION = "combination"
    CONFLUENCE = "confluence"
    SWING_STRATEGY = "swing_strategy"


class SignalDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TradingStyle(str, Enum):
    INTRADAY = "intraday"
    SWING = "swing"
    POSITION = "position"


class LevelType(str, Enum):
    SUPPORT = "support"
    RESISTANCE = "resistance"


class ScanMode(str, Enum):
    STANDARD = "standard"
    SWING = "swing"
    INTRADAY = "intraday"


class OverlayShape(str, Enum):
    LINE = "line"
    BOX = "box"
    ICON = "icon"
    ARROW = "arrow"


class OverlayKind(str, Enum):
    CANDLESTICK = "candlestick"
    SUPPORT = "support"
    RESISTANCE = "resistance"
    TARGET = "target"
    STOP = "stop"


# --- Indicator bundle ---
# Each array is aligned to the bar sequence; None marks insufficient history.

Series = list[Optional[float]]


class MACDSeries(BaseModel):
    line: Series
    signal: Series
    histogram: Series


class MovingAverageSeries(BaseModel):
    sma20: Optional[Series] = None
    sma50: Optional[Series] = None
    sma200: Optional[Series] = None


class EMASeries(BaseModel):
    ema12: Optional[Series] = None
    ema26: Optional[Series] = None
    ema20: Optional[Series] = None
    ema50: Optional[Series] = None


class BollingerSeries(BaseModel):
    upper: Series
    middle: Series
    lower: Series


class StochasticSeries(BaseModel):
    k: Series
    d: Series


class IndicatorSeries(BaseModel):
    rsi: Optional[Series] = None
    macd: Optional[MACDSeries] = None
    sma: MovingAverageSeries = Field(default_factory=MovingAverageSeries)
    ema: EMASeries = Field(default_factory=EMASeries)
    bollinger: Optional[BollingerSeries] = None
    stochastic: Optional[StochasticSeries] = None
    atr: Optional[Series] = None
    obv: Optional[Series] = None
    vwap: Optional[Series] = None

    def named_arrays(self) -> dict[str, Series]:
        """Flatten the bundle into name -> array for length checks and export."""
        arrays: dict[str, Series] = {}
        for name in ("rsi", "atr", "obv", "vwap"):
            values = getattr(self, name)
            if values is not None:
                arrays[name] = values
        if self.macd is not None:
            arrays["macd.line"] = self.macd.line
            arrays["macd.signal"] = self.macd.signal
            arrays["macd.histogram"] = self.macd.histogram
        for group in ("sma", "ema"):
            for name, values in getattr(self, group).model_dump().items():
                if values is not None:
                    arrays[f"{group}.{name}"] = values
        if self.bollinger is not None:
            arrays["bollinger.upper"] = self.bollinger.upper
            arrays["bollinger.middle"] = self.bollinger.middle
            arrays["bollinger.lower"] = self.bollinger.lower
        if self.stochastic is not None:
            arrays["stochastic.k"] = self.stochastic.k
            arrays["stochastic.d"] = self.stochastic.d
        return arrays


# --- Detection results ---

class SupportResistanceLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float
    type: LevelType
    touches: int = Field(ge=1)
    strength: float
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)


class DetectedPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: PatternCategory
    name: str
    code: str
    description: str
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)
    probability: float = Field(ge=0, le=95)
    win_rate: float
    risk_reward: float
    entry_price: float
    target_price: float
    stop_loss: float
    signal: SignalDirection
    confidence: ConfidenceLevel
    evidence: tuple[str, ...] = ()
    trading_style: TradingStyle
    timeframe: str = "1D"
    algorithm: str = ""
    confirmation: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_levels(self):
        if self.end_index < self.start_index:
            raise ValueError(f"end_index {self.end_index} precedes start_index {self.start_index}")
        if self.signal == SignalDirection.BULLISH and not (
            self.stop_loss < self.entry_price < self.target_price
        ):
            raise ValueError(
                f"bullish {self.code} requires stop < entry < target, got "
                f"{self.stop_loss} / {self.entry_price} / {self.target_price}"
            )
        if self.signal == SignalDirection.BEARISH and not (
            self.target_price < self.entry_price < self.stop_loss
        ):
            raise ValueError(
                f"bearish {self.code} requires target < entry < stop, got "
                f"{self.target_price} / {self.entry_price} / {self.stop_loss}"
            )
        return self


class PatternOverlay(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: OverlayShape
    start_x: int
    start_y: float
    end_x: Optional[int] = None
    end_y: Optional[float] = None
    color: str
    stroke_width: float
    label: Optional[str] = None
    code: Optional[str] = None
    icon: Optional[str] = None
    pattern_type: Optional[OverlayKind] = None
    confidence: Optional[ConfidenceLevel] = None


class ScanResult(BaseModel):
    patterns: list[DetectedPattern]
    support_resistance: list[SupportResistanceLevel]
    overlays: list[PatternOverlay]


# --- API payloads ---

class ScanOptions(BaseModel):
    mode: ScanMode = ScanMode.STANDARD
    pattern_types: list[PatternCategory] = Field(
        default_factory=lambda: [
            PatternCategory.CANDLESTICK,
            PatternCategory.COMBINATION,
            PatternCategory.CONFLUENCE,
        ]
    )
    top_n: Optional[int] = Field(default=None, ge=1, description="Patterns kept after ranking")


class ScanRequest(BaseModel):
    ticker: str
    bars: list[OHLCVBar]
    indicators: Optional[IndicatorSeries] = None
    options: ScanOptions = Field(default_factory=ScanOptions)


class ScanResponse(BaseModel):
    ticker: str
    patterns: list[DetectedPattern]
    support_resistance: list[SupportResistanceLevel]
    overlays: list[PatternOverlay]
    error: Optional[str] = None


class IndicatorsRequest(BaseModel):
    ticker: str
    bars: list[OHLCVBar]


class IndicatorsResponse(BaseModel):
    ticker: str
    indicators: Optional[IndicatorSeries] = None
    error: Optional[str] = None


class ExportRequest(BaseModel):
    ticker: str
    bars: list[OHLCVBar]
    indicators: Optional[IndicatorSeries] = None
    columns: list[str] = Field(default_factory=lambda: ["rsi", "sma20", "sma50", "sma200", "macd"])
