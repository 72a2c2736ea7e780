"""LLM-backed content for practice.

Usage:
    from src.generation import ProblemGenerator

    generator = ProblemGenerator(client, catalog)
    problem = await generator.generate("I-GEN-01", level=1)
    result = await generator.evaluate_answer(problem, "x = 3")
"""
from src.generation.problem_generator import ProblemGenerator, UnknownSkillError, answer_message

__all__ = [
    "ProblemGenerator",
    "UnknownSkillError",
    "answer_message",
]
