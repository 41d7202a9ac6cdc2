[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miptools"
version = "0.1.0"
description = "A toy shell, a parallel text search tool, and assemblers and virtual machines for two teaching instruction sets"
requires-python = ">=3.10"
dependencies = []
keywords = ["shell", "assembler", "virtual machine", "emulator", "grep", "kmp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
    "Topic :: Software Development :: Assemblers",
    "Topic :: System :: Shells",
    "Topic :: Text Processing :: Filters",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
microsha = "miptools.shell:main"
psearch = "miptools.psearch:main"
mipt2-run = "miptools.mipt2_vm:main"
mipt2-bin = "miptools.binfile:main"
mipt64-run = "miptools.mipt64_vm:main"

[tool.hatch.build.targets.wheel]
packages = ["miptools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
