from .service import DeploymentService, SOURCE_VALIDATION

__all__ = ['DeploymentService', 'SOURCE_VALIDATION']
