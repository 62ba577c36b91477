"""Training pipeline core: generation, fine-tune lifecycle and evaluation."""
