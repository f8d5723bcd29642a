from . import inventory, phases, run, secrets, serve, validate

__all__ = ['inventory', 'phases', 'run', 'secrets', 'serve', 'validate']
