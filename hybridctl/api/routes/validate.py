from fastapi import APIRouter, Depends, HTTPException

from hybridctl.api.routes.deps import get_config
from hybridctl.config import PipelineConfig
from hybridctl.modules.checks import BATTERIES, run_battery

router = APIRouter()


@router.get("/validate/{battery}")
def run_validate(battery: str, config: PipelineConfig = Depends(get_config)):
    if battery not in BATTERIES:
        raise HTTPException(status_code=404, detail=f"Unknown battery '{battery}', expected one of: {', '.join(BATTERIES)}")
    return run_battery(battery, config).to_dict()
