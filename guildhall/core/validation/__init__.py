from guildhall.core.validation.input_validator import InputValidator

__all__ = ["InputValidator"]
