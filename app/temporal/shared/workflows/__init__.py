from .parse_contract import ParseContractWorkflow
from .artifact_purge import ArtifactPurgeWorkflow

__all__ = ["ParseContractWorkflow", "ArtifactPurgeWorkflow"]
