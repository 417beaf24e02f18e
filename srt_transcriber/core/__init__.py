"""Pure subtitle, stage and job modules.

WHY: The format engine, the stage merger and the job record are used by
every surface (pipeline, CLI, HTTP API, tests) and must stay free of
network and storage side effects.

HOW: srt.py parses, generates and validates SRT text; stages.py defines
the advanced-pipeline stages and merges sparse stage maps; job.py holds
the Job and SrtSettings records; prompts.py and media.py build the
inputs for external calls.

RULES:
- No module here calls an external service
- Functions never keep references to Job data between calls
"""
