"""Hook wiring: injected entries and the local listener that receives them."""
