"""Node kinds, their configuration models and executors."""
