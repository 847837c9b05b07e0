"""Pattern scanning, indicator and export API endpoints."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
import logging

from models.technicals import (
    ScanRequest, ScanResponse,
    IndicatorsRequest, IndicatorsResponse,
    ExportRequest,
)
from services.indicator_engine import IndicatorEngine
from services.pattern_scanner import PatternScanner
from services.report_exporter import chart_data_to_csv, patterns_to_csv
from utils.validation import validate_bars, validate_indicators

router = APIRouter()
logger = logging.getLogger(__name__)


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/scan", response_model=ScanResponse)
async def scan_patterns(request: ScanRequest):
    """Detect patterns, support/resistance levels and chart overlays for OHLCV data."""
    try:
        result = PatternScanner().scan(request.bars, request.indicators, request.options)
        return ScanResponse(
            ticker=request.ticker,
            patterns=result.patterns,
            support_resistance=result.support_resistance,
            overlays=result.overlays,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Pattern scan error for {request.ticker}: {e}")
        return ScanResponse(
            ticker=request.ticker, patterns=[], support_resistance=[], overlays=[], error=str(e),
        )


@router.post("/indicators", response_model=IndicatorsResponse)
async def compute_indicators(request: IndicatorsRequest):
    """Compute the indicator bundle for given OHLCV data."""
    try:
        validate_bars(request.bars)
        indicators = IndicatorEngine.compute_indicators(request.bars)
        return IndicatorsResponse(ticker=request.ticker, indicators=indicators)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Indicator computation error for {request.ticker}: {e}")
        return IndicatorsResponse(ticker=request.ticker, error=str(e))


@router.post("/export")
async def export_chart_data(request: ExportRequest):
    """Chart data with the selected indicator columns as CSV."""
    try:
        validate_bars(request.bars)
        validate_indicators(request.indicators, len(request.bars))
        indicators = request.indicators or IndicatorEngine.compute_indicators(request.bars)
        content = chart_data_to_csv(request.bars, indicators, request.columns)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Chart export error for {request.ticker}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _csv_response(content, f"{request.ticker}_chart_data.csv")


@router.post("/export/patterns")
async def export_patterns(request: ScanRequest):
    """Run a scan and return the ranked patterns as CSV."""
    try:
        result = PatternScanner().scan(request.bars, request.indicators, request.options)
        content = patterns_to_csv(result.patterns)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Pattern export error for {request.ticker}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _csv_response(content, f"{request.ticker}_patterns.csv")
