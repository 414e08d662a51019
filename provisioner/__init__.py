"""
Raspberry Pi provisioner.

Recipes describe a provisioning target as preflight requirements, parameters
and ordered idempotent steps; the engine runs them with resumable state.
"""
