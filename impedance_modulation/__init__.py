"""Task-driven joint impedance modulation for serial robot arms."""

__version__ = "0.1.0"

__all__ = ["algebra", "utilities", "logger", "kinematics", "manager"]