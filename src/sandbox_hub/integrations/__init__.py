from sandbox_hub.integrations.command_runner import SpawnFn, kill_process, spawn_command

__all__ = ["SpawnFn", "kill_process", "spawn_command"]
