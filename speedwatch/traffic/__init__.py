"""Traffic simulation package.

This package runs the enforcement simulation: spawning vehicles, advancing
them tick by tick and coordinating the services they interact with.
"""
