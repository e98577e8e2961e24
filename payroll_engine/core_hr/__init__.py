"""Core HR module — read-only Employee, Role, Department, Country models."""

from payroll_engine.core_hr.models import Country, Department, Employee, Role

__all__ = ["Country", "Department", "Employee", "Role"]
