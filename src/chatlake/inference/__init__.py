"""Derived computations, each tracked by an InferenceRun."""
