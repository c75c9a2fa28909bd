from step_sync_assistant.privacy.phi_sanitizer import PhiSanitizer, SanitizationError, SanitizationResult

__all__ = [
    "PhiSanitizer",
    "SanitizationError",
    "SanitizationResult",
]
