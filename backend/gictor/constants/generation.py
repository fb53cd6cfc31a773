"""Generation kinds, lifecycle statuses and pipeline stage tables."""

# Lifecycle of a GenerationRequest
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

ACTIVE_STATUSES = frozenset({STATUS_PENDING, STATUS_PROCESSING})
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

# Single-request kinds (one generated file each)
FILE_KINDS = frozenset(
    {
        "first_frame",
        "lip_sync",
        "script",
        "speech",
        "b_roll",
        "animate",
        "frame",
        "talking_head",
        "audio",
        "humanize",
    }
)

# Pipeline kinds and the stage each one produces
PIPELINE_KIND_STAGES: dict[str, str] = {
    "pipeline_first_frame": "first_frame",
    "pipeline_first_frame_b_roll": "first_frame",
    "pipeline_script": "script",
    "pipeline_voice": "voice",
    "pipeline_final_video": "final_video",
}

GENERATION_KINDS = FILE_KINDS | frozenset(PIPELINE_KIND_STAGES)

# Stage filled by a single-request kind dispatched on behalf of a pipeline
FILE_KIND_STAGES: dict[str, str] = {
    "first_frame": "first_frame",
    "script": "script",
    "speech": "voice",
    "audio": "voice",
    "lip_sync": "lip_sync",
    "animate": "animate",
    "b_roll": "final_video",
    "talking_head": "final_video",
}

# Pipelines
PIPELINE_DRAFT = "draft"
PIPELINE_PROCESSING = "processing"
PIPELINE_COMPLETED = "completed"
PIPELINE_FAILED = "failed"

PIPELINE_TYPES = ("talking_head", "lip_sync", "clips", "motion_graphics")

PIPELINE_STAGES = (
    "first_frame",
    "last_frame",
    "script",
    "voice",
    "animate",
    "lip_sync",
    "final_video",
)

# Stage names some workers report for an existing stage
STAGE_ALIASES: dict[str, str] = {
    "speech": "voice",
}

# Completing this stage completes the pipeline and materializes its output file
FINAL_STAGE_BY_PIPELINE_TYPE: dict[str, str] = {
    "talking_head": "final_video",
    "lip_sync": "lip_sync",
    "clips": "animate",
    "motion_graphics": "animate",
}

# Media type of the finished file produced by each stage
STAGE_FILE_TYPES: dict[str, str] = {
    "first_frame": "image",
    "last_frame": "image",
    "script": "text",
    "voice": "audio",
    "animate": "video",
    "lip_sync": "video",
    "final_video": "video",
}
