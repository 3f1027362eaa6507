from fastapi import APIRouter
from typing import Dict

from script_runner.dependencies import sandbox_status

router = APIRouter()


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok", "sandbox": sandbox_status()}
