[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "impedance-modulation"
version = "0.1.0"
description = "Task-driven joint impedance modulation for serial robot arms: stiffness, damping and feed-forward torques from task wrench and precision."
requires-python = ">=3.10"
keywords = [
    "robotics",
    "impedance control",
    "stiffness modulation",
    "kinematics",
    "urdf",
    "jacobian",
    "gravity compensation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Human Machine Interfaces",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
impedance-modulation = "impedance_modulation.manager:main"

[tool.hatch.build.targets.wheel]
packages = ["impedance_modulation"]

[tool.hatch.build.targets.sdist]
include = [
    "impedance_modulation",
    "tests",
    "pyproject.toml",
    "README.md",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
