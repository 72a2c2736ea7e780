"""
Learning: learner-facing services on top of the skill catalog.

- mastery_engine: rank/status transitions and unlock cascade
- student_model_service: per-learner document, serialized mutations
- practice_service: generate/evaluate practice problems
- skip_challenge: master a whole unit with one composite problem
- recommendation / skill_map_summary / advisor: what to study next
"""
