"""
Operations Layer

This package provides business logic operations that compose database methods
for the progression workflows. Operations modules handle multi-step
transactions, validation and reward rules.

Architecture:
- Database layer: Pure data access and table definitions
- Operations layer: Business logic composition and workflows
- Service layer: Facade used by the club app

Each operations module focuses on a specific domain:
- LedgerOperations: Atomic, floor-at-zero balance changes with history
- AttendanceOperations: Training attendance, streaks and corrections
- RewardOperations: Manual, challenge and exercise rewards
"""
