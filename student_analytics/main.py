"""FastAPI main application for Student Performance Analytics."""

import os
import logging
import traceback
from typing import Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, Request, Query
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from student_analytics.config import get_settings
from student_analytics.models import (
    FilterOptions,
    Forecast,
    InsightsResponse,
    Metrics,
    ResultsResponse,
    StudentComparison,
    StudentTrend,
    UploadResponse,
)
from student_analytics.parsers import FileReadError, ParseError, to_csv
from student_analytics.pipeline import AnalyticsPipeline

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Student Performance Analytics", version="1.0.0")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One pipeline per running server; every upload replaces its data set
pipeline = AnalyticsPipeline(settings)


# Override default exception handlers to return JSON (register specific handlers first)
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    error_detail = str(exc)
    if settings.debug:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def require_data() -> None:
    if not pipeline.has_data:
        raise HTTPException(status_code=404, detail="No results available")


@app.get("/", response_class=HTMLResponse)
async def root():
    """Serve the main HTML page."""
    html_path = os.path.join(os.path.dirname(__file__), 'static', 'index.html')
    if os.path.exists(html_path):
        with open(html_path, 'r', encoding='utf-8') as f:
            return HTMLResponse(content=f.read())
    return HTMLResponse(content="<h1>Student Performance Analytics</h1><p>Static files not found. Please ensure the static directory exists.</p>")


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """Upload a CSV file and make it the current data set."""
    file_bytes = await file.read()
    if len(file_bytes) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
        )

    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload a CSV file (.csv)"
        )

    if not file_bytes:
        raise HTTPException(status_code=400, detail="File is empty")

    try:
        results = pipeline.load_bytes(file_bytes)
    except FileReadError as e:
        logger.error("Upload of %s failed: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=str(e))
    except ParseError as e:
        logger.error("Upload of %s failed: %s", file.filename, e)
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})

    summary = pipeline.risk_summary()
    logger.info(
        "Results: %d records (%d high, %d medium, %d low, %d none)",
        summary.total, summary.high, summary.medium, summary.low, summary.none,
    )

    return UploadResponse(
        success=True,
        message=f"Successfully processed {len(results)} records",
        results=results,
        summary=summary,
        errors=pipeline.errors,
    )


@app.get("/results", response_model=ResultsResponse)
async def get_results(
    search: Optional[str] = None,
    subject: Optional[str] = None,
    semester: Optional[str] = None,
    risk_level: Optional[str] = None,
    sort: Optional[str] = None,
):
    """Get the filtered and sorted view. Only the query parameters given are changed."""
    require_data()
    filters = pipeline.filters

    if search is not None:
        filters.set_search(search)
    if subject is not None:
        filters.set_subject_filter(subject)
    if semester is not None:
        filters.set_semester_filter(semester)
    if risk_level is not None:
        filters.set_risk_filter(risk_level)
    if sort is not None:
        try:
            filters.set_sort(sort)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    return ResultsResponse(
        results=filters.get_filtered_data(),
        summary=filters.get_filter_summary(),
        filters=filters.get_filters(),
        sort=filters.get_sort(),
    )


@app.post("/filters/clear", response_model=ResultsResponse)
async def clear_filters():
    """Reset search, filters and sort order."""
    require_data()
    filters = pipeline.filters
    filters.clear_filters()
    return ResultsResponse(
        results=filters.get_filtered_data(),
        summary=filters.get_filter_summary(),
        filters=filters.get_filters(),
        sort=filters.get_sort(),
    )


@app.get("/filters/options", response_model=FilterOptions)
async def filter_options():
    require_data()
    return FilterOptions(
        subjects=pipeline.filters.get_unique_subjects(),
        semesters=pipeline.filters.get_unique_semesters(),
    )


@app.get("/metrics", response_model=Metrics)
async def get_metrics():
    require_data()
    return pipeline.analytics.get_metrics()


@app.get("/insights", response_model=InsightsResponse)
async def get_insights():
    """Analytics, risk and predictive insights."""
    require_data()
    records = pipeline.records
    return InsightsResponse(
        analytics=pipeline.analytics.generate_insights(),
        predictive=pipeline.analytics.generate_predictive_insights(),
        risk=pipeline.risk_engine.get_risk_insights(records),
        at_risk_count=pipeline.risk_engine.get_at_risk_count(records),
        ranked_at_risk=pipeline.risk_engine.get_at_risk_students(records),
    )


@app.get("/students/compare", response_model=StudentComparison)
async def compare_students(first: str, second: str):
    require_data()
    try:
        return pipeline.compare_students(first, second)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Student not found: {e.args[0]}")


@app.get("/students/{student_id}/trend", response_model=StudentTrend)
async def student_trend(student_id: str):
    require_data()
    return pipeline.analytics.student_trend(student_id)


@app.get("/forecast", response_model=Forecast)
async def get_forecast(periods: Optional[int] = Query(None, ge=1, le=12)):
    require_data()
    return pipeline.analytics.forecast(periods or settings.forecast_periods)


@app.get("/download.csv")
async def download_csv():
    """Download the current filtered view as CSV."""
    require_data()
    output = to_csv(pipeline.filters.get_filtered_data())

    return StreamingResponse(
        iter([output]),
        media_type="text/csv",
        headers={
            "Content-Disposition": "attachment; filename=student_data.csv"
        }
    )


# Mount static files
static_path = os.path.join(os.path.dirname(__file__), 'static')
if os.path.exists(static_path):
    app.mount("/static", StaticFiles(directory=static_path), name="static")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
