"""Language model collaborator used to propose healing strategies."""
