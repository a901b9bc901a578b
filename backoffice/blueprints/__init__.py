"""JSON blueprints of the back office API; each sub-package exposes its Blueprint."""
