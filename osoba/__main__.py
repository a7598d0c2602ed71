"""Allow running osoba with python -m osoba."""

from osoba.cli import main

main()
