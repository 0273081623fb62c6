"""Mount host directories into virtual machine instances over SSHFS."""
