[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "n64kit"
version = "0.1.0"
description = "Nintendo 64 development tools: Controller Pak file system, ROM builder, font map generator and cart helpers"
requires-python = ">=3.10"
dependencies = [
    "pillow",
]
keywords = ["n64", "nintendo64", "controller-pak", "rom", "uf2", "z64", "homebrew"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
n64-mkrom = "n64kit.mkrom:main"
n64-mkfont = "n64kit.mkfont:main"

[tool.hatch.build.targets.wheel]
packages = ["n64kit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
