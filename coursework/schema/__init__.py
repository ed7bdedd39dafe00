"""Schema package exports."""

from .sql import Course, Extension, Stage, StageStatus, TestResult, UserCourse, UserStage

__all__ = ["Course", "Extension", "Stage", "StageStatus", "TestResult", "UserCourse", "UserStage"]
