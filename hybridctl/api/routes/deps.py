from hybridctl.config import PipelineConfig


def get_config() -> PipelineConfig:
    return PipelineConfig.load()
