from .config_loader import ConfigLoader, resolve_env_vars, deep_merge, ENVIRONMENT_VARIABLE, DEFAULT_ENVIRONMENT

__all__ = ['ConfigLoader', 'resolve_env_vars', 'deep_merge', 'ENVIRONMENT_VARIABLE', 'DEFAULT_ENVIRONMENT']
