"""git smash - fold staged changes into an earlier commit."""
