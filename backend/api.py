"""ntpq API - FastAPI server exposing NTP status and time queries."""

import asyncio
from typing import Dict, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from ntpq.client import NtpClient
from ntpq.errors import AddressError, NoResponse, NtpError
from ntpq.protocol import NTP_PORT


client: Optional[NtpClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global client

    client = NtpClient()

    yield

    if client:
        client.close()
    client = None


app = FastAPI(
    title="ntpq - NTP query engine",
    description="Control mode status and client mode time queries",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class StatusResponse(BaseModel):
    host: str
    variables: Dict[str, str]


class TimeResponse(BaseModel):
    host: str
    time: int
    offset: float
    delay: float
    stratum: int
    precision: int
    refid: str


class DefaultsModel(BaseModel):
    retries: int
    timeout_ms: int


class DefaultsUpdateRequest(BaseModel):
    retries: Optional[int] = None
    timeout_ms: Optional[int] = None


def get_client() -> NtpClient:
    if not client:
        raise HTTPException(status_code=500, detail="Client not initialized")
    return client


def raise_for_error(error: Exception):
    if isinstance(error, NoResponse):
        raise HTTPException(status_code=504, detail=str(error))
    if isinstance(error, AddressError):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ValueError):
        raise HTTPException(status_code=422, detail=str(error))
    raise HTTPException(status_code=502, detail=str(error))


@app.get("/ntp/status", response_model=StatusResponse)
async def get_ntp_status(host: str,
                         port: int = Query(NTP_PORT, ge=1, le=65535),
                         retries: Optional[int] = Query(None, ge=0),
                         timeout_ms: Optional[int] = Query(None, gt=0)):
    ntp = get_client()

    try:
        variables = await asyncio.to_thread(ntp.query_status, host, port, retries, timeout_ms)
    except (NtpError, ValueError) as e:
        raise_for_error(e)

    return StatusResponse(host=host, variables=variables)


@app.get("/ntp/time", response_model=TimeResponse)
async def get_ntp_time(host: str,
                       port: int = Query(NTP_PORT, ge=1, le=65535),
                       retries: Optional[int] = Query(None, ge=0),
                       timeout_ms: Optional[int] = Query(None, gt=0)):
    ntp = get_client()

    try:
        result = await asyncio.to_thread(ntp.query_time, host, port, retries, timeout_ms)
    except (NtpError, ValueError) as e:
        raise_for_error(e)

    return TimeResponse(
        host=host,
        time=result.time,
        offset=result.offset,
        delay=result.delay,
        stratum=result.stratum,
        precision=result.precision,
        refid=result.refid
    )


@app.get("/ntp/defaults", response_model=DefaultsModel)
async def get_defaults():
    ntp = get_client()
    return DefaultsModel(**ntp.defaults.to_dict())


@app.put("/ntp/defaults", response_model=DefaultsModel)
async def update_defaults(request: DefaultsUpdateRequest):
    ntp = get_client()

    try:
        ntp.defaults.update(retries=request.retries, timeout_ms=request.timeout_ms)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return DefaultsModel(**ntp.defaults.to_dict())


@app.get("/metrics")
async def get_metrics():
    ntp = get_client()
    return {
        'stats': ntp.metrics.get_current_stats(),
        'events': ntp.metrics.get_recent_events(20),
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "ntpq API"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
