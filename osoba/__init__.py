"""osoba: GitHub label-driven orchestrator for Claude coding sessions in tmux."""
