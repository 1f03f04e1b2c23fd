# Registers the assured step library with behave.
from assured.bdd.steps import *  # noqa: F401,F403
