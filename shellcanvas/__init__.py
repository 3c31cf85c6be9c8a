"""shell-canvas: shell sessions in tmux panes, driven over a unix socket."""
