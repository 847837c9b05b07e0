from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class OHLCVBar(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    adj_close: Optional[float] = None
