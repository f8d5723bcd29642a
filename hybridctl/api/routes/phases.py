from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from hybridctl.api.routes.deps import get_config
from hybridctl.config import PipelineConfig
from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.executor import ConfirmMode
from hybridctl.modules.pipeline import PipelineController

router = APIRouter()


class PhaseStatus(BaseModel):
    name: str
    description: str
    done: bool
    has_probe: bool
    pre_confirm: bool


@router.get("/phases", response_model=List[PhaseStatus])
def list_phases(config: PipelineConfig = Depends(get_config)):
    controller = PipelineController(config, ConfirmationGate())
    status = controller.status()
    return [
        PhaseStatus(
            name=phase.name,
            description=phase.description,
            done=status[phase.name],
            has_probe=phase.probe is not None,
            pre_confirm=ConfirmMode.PRE_CONFIRM in phase.confirm,
        )
        for phase in controller.phases()
    ]
