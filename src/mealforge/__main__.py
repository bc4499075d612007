from mealforge.cli import main

main()
