# Models package init
